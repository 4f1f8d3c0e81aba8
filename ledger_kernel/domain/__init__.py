"""Pure domain helpers: clock, drafts, billing-period math, cancellation."""
