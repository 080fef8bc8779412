"""
placemap: Collaborative Canvas History Explorer

Ingests the pixel-placement log of a collaborative canvas, builds a
per-pixel event index and serves map tiles and timelapses over it.

LAYER STRUCTURE:
================

1. INGESTION LAYER (ingestion/)
   - Responsibility: Stream sharded raw logs, parse lines into RawEvents
   - Allowed inputs: HTTP, file or in-memory shards of a known EventSource
   - Outputs: a finalized CanvasIndex (via dataset.IndexBuilder)
   - MUST NOT: Expose a partial index after any failure

2. DATASET LAYER (dataset/)
   - Responsibility: Chunked per-pixel history, persisted store codec
   - Allowed inputs: RawEvents (builder), .npz archives (codec)
   - Outputs: CanvasIndex (immutable, shared read-only)
   - MUST NOT: Mutate an index after finalize

3. COMPLETION GRAPH (sync/)
   - Responsibility: Hand the index to consumers, derive views at most once
   - Outputs: Promise values awaited by any number of requests

4. RENDER LAYER (render/)
   - Responsibility: Tile sampling, timelapse frames, PNG/GIF/APNG encoding
   - Allowed inputs: a finalized CanvasIndex
   - MUST NOT: Modify the index

5. API LAYER (api/)
   - Responsibility: Dataset loading/caching and the read-only HTTP surface

CONSTRAINTS ENFORCED:
=====================
- Write-once index: built once per process, then immutable
- Fail-closed ingestion: first error aborts the run with full context
- Explicit errors: every failure carries an ErrorCode record
"""

__version__ = "0.1.0"
