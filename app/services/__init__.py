"""Services package — all business logic lives here, never in routers.

Files:
  headers.py         — storage label <-> public field name normalization
  tokens.py          — token issuance, matching, expiry and resolution
  reconciliation.py  — diff / submission cap / audit row engine (pure, in-memory)
  graph_client.py    — Microsoft Graph share-link download/upload with cached auth
  table_store.py     — workbook / JSON snapshot codecs over Graph or local files
  address.py         — read path and reconcile-and-persist write path

Rule: routers call services, services call the table store, the store calls Graph.
      No FastAPI imports in services.
"""
