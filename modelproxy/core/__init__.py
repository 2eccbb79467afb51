# Core package - configuration, logging and Redis connections
