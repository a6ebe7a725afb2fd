"""Core resolution, caching and flag evaluation for accessgraph."""
