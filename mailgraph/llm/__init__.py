"""Language-model clients (Ollama, LiteLLM) used for extraction and embeddings."""
