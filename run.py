import os
from narravo import create_app

app = create_app()

if __name__ == '__main__':
    # Never use debug=True or host='0.0.0.0' in production
    flask_env = os.getenv('FLASK_ENV', 'production')
    debug = flask_env == 'development'

    host = '0.0.0.0' if flask_env == 'development' else '127.0.0.1'
    port = int(os.getenv('PORT', '5001'))

    app.run(debug=debug, host=host, port=port)
