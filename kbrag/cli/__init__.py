"""Command-line tools for kbrag.

- ``python -m kbrag.cli ingest <id>`` -- run the pipeline for one artifact
- ``python -m kbrag.cli status <id>`` -- print processing state and log
- ``python -m kbrag.cli worker`` -- process queued ingestion jobs
- ``python -m kbrag.cli encrypt-key`` -- encrypt a provider key for storage

Heavy imports are deferred inside handlers so ``encrypt-key`` stays fast.
"""
