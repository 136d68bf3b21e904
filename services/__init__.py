"""Match engine services: admission control, challenges, turns and the outbox writer."""
