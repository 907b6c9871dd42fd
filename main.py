import os
from app import app
import routes  # noqa: F401 Import routes to register them with Flask

if __name__ == "__main__":
    # Use debug=False for production safety
    debug_mode = os.environ.get('FLASK_DEBUG', 'False').lower() == 'true'
    port = int(os.environ.get('PORT', 5000))
    app.run(host="0.0.0.0", port=port, debug=debug_mode)
