"""Pure domain layer: clock, decimal math, DTOs, worker events and referral rules."""
