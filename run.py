from dotenv import load_dotenv
load_dotenv()

import atexit

from app import create_app
from app.database import dispose_database

app = create_app()

# Close pooled database connections when the process exits cleanly
atexit.register(dispose_database, app)

if __name__ == '__main__':
    # debug=True means Flask will auto-reload when you save a file
    # and show detailed error pages. Only enabled for local development.
    import os
    debug = app.config['ENVIRONMENT'] == 'development'
    app.run(debug=debug, host='0.0.0.0', port=int(os.environ.get('PORT', '3000')))
