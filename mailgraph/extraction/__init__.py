"""Entity extraction: prompt, resolution, relationship synthesis and the batch pipeline."""
