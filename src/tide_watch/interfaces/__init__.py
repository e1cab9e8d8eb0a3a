"""Data contracts shared by the analyzer, the depth log and the outputs."""
