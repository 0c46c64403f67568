# eventlens core: entities, errors, ports and shared services
