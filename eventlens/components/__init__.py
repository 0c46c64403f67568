# eventlens atomic components
# Each component exposes models, (optional) ports and run_* entry points
