"""
API route modules.

This package contains subrouters for:
- Auth: login, logout and current user
- Users: tenant user administration
- Recipes: recipe templates and JSON/BatchML interchange
- Batches: batch lifecycle, step execution, signatures and batch records
- Audit: audit trail listing and CSV/XLSX export
- Integrations: simulated OPC-UA feed
- Tenant: tenant settings

Routers are included from ebr_api.api.main (under the /api/v1 prefix).
"""
