"""Infrastructure layer - remote cluster integration over HTTP."""
