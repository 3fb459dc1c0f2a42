import json
import os
import sys

from ebr_api.api.main import app
from ebr_api.core.settings import get_app_settings

# all REST routes are under /api/v1
openapi_schema = app.openapi()

# The session cookie is not expressed by the bearer scheme; document it as an extension
openapi_schema["x-session-cookie"] = {
    "name": get_app_settings().SESSION_COOKIE_NAME,
    "httpOnly": True,
    "set_by": "/api/v1/auth/login",
    "cleared_by": "/api/v1/auth/logout",
}

output_path = sys.argv[1] if len(sys.argv) > 1 else os.path.join("interfaces", "openapi.json")
os.makedirs(os.path.dirname(output_path) or ".", exist_ok=True)

with open(output_path, "w") as f:
    json.dump(openapi_schema, f, indent=2)
print(f"OpenAPI schema written to {output_path}")
