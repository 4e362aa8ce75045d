"""Agent engine adapters implementing the dispatch capability."""
