"""EchoKey HTTP service: FastAPI surface over the echokey engine with SQLite persistence."""
