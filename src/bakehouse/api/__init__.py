"""
HTTP surface of Bakehouse.

- public_app: Read-only catalog endpoints for the public order form, served
  from the external store rather than the private database
"""
