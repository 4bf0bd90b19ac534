"""Batch orchestrator for transcription, translation and dubbing stages.

Why not Celery / Prefect / a broker?
~~~~~~~~~~~~~~~~~~~~~~~~~~~~~~~~~~~~
The work is a handful of long-running awaits per task against remote AI
services, driven from one process that also renders the task list. A
single asyncio loop with a small pull-model worker pool gives the bounded
parallelism and per-task retry needed here without an operational
dependency. All task state lives in :class:`QueueManager`.
"""
