"""Import services: sheet processing, batch loading, orchestration."""
