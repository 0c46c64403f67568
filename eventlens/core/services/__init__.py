# eventlens core services
# Shared building blocks used by the components: path handling, session
# folding, query execution (cancellation, bounded workers, storage retry)
