"""
API routers for Cinevault
"""
