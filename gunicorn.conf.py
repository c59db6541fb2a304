import os

wsgi_app = 'app:app'
proc_name = 'videopop'
bind = f"0.0.0.0:{os.getenv('PORT', '10000')}"
workers = int(os.getenv('GUNICORN_WORKERS', '2'))
threads = int(os.getenv('GUNICORN_THREADS', '4'))
worker_class = os.getenv('GUNICORN_WORKER_CLASS', 'gthread')
# Lead notifications retry synchronously inside the request
timeout = int(os.getenv('GUNICORN_TIMEOUT', '60'))
graceful_timeout = 20
keepalive = 5
max_requests = 2000
max_requests_jitter = 100
accesslog = '-'
errorlog = '-'
loglevel = os.getenv('GUNICORN_LOG_LEVEL', 'info')
