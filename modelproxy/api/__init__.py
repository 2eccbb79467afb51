# API routers package
