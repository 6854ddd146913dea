"""vaultcue-sim - interactive simulator for vaultcue."""
