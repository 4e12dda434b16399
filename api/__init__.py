"""HTTP surface of the operations assistant."""
