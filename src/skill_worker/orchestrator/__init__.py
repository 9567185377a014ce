"""Job orchestration for queue-driven CLI agent execution.

Why not Celery / RQ?
~~~~~~~~~~~~~~~~~~~~
Producers push plain JSON jobs onto a Redis list and subscribe to a results
channel; they are not Python and do not speak any task-framework protocol.
The hard part of this package is not queuing but the boundary around the
external agent CLIs (claude, gemini):

- Per-job workspace materialization: a persistent git checkout reused by
  later runs of the same task, or a throwaway scratch directory.
- Prompt assembly from skill blocks and free-form context.
- Agent invocation with stdin prompts, hard timeouts, and output caps,
  keeping partial output when the agent fails.
- Commit-and-push of whatever the agent left on disk, independent of
  whether the agent itself succeeded.

A ``BLPOP`` → process → ``PUBLISH`` loop over three Redis keys covers the
queue side; everything else is domain logic that would live inside a
framework task anyway.
"""
