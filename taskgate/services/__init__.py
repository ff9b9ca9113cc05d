"""Service layer: authorization, auditing and the mutation pipeline."""
