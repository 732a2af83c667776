"""Domain services: catalog, attempts, scoring and the CTFd adapter."""
