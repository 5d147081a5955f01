"""Coal delivery settlement service."""
