"""Work items (tasks), their groups (chains) and the requests they serve."""
