import os
from dotenv import load_dotenv
load_dotenv()

print("Config file:", os.getenv("SONGMAP_CONFIG", "configs/config.yaml"),
      "(found)" if os.path.exists(os.getenv("SONGMAP_CONFIG", "configs/config.yaml")) else "(missing)")
print("Graph backend:", os.getenv("SONGMAP_GRAPH_BACKEND", "sqlite (default)"))
print("History backend:", os.getenv("SONGMAP_HISTORY_BACKEND", "sqlite (default)"))
print("REDIS_URL:", bool(os.getenv("REDIS_URL")))
print("NEO4J_URI:", os.getenv("NEO4J_URI", "bolt://localhost:7687"))
print("NEO4J_PASSWORD:", bool(os.getenv("NEO4J_PASSWORD")))
