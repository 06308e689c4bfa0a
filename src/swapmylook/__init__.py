"""SwapMyLook backend: generation job lifecycle and webhook ingestion."""
