import os

# app.main builds a store at import time; keep the suite off Firestore.
os.environ.setdefault("USE_INMEMORY", "1")
