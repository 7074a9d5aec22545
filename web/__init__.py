"""Web layer: FastAPI routes consuming the valetclock authorization core"""
