from salvo import create_app
from salvo.services.matches.retention import start_retention_worker

app = create_app()
start_retention_worker(app)

if __name__ == '__main__':
    app.run(debug=True)
