"""
Domain services: business rules and transaction boundaries on top of the repositories.
"""
