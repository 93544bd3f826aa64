"""Host-side persistence of captured sessions."""
