# gunicorn_conf.py
import multiprocessing

from disparador.core.config import settings

_workers_default = (multiprocessing.cpu_count() * 2) + 1

bind = settings.GUNICORN_BIND
workers = settings.GUNICORN_WORKERS or _workers_default
worker_class = settings.GUNICORN_WORKER_CLASS

accesslog = '-'
errorlog = '-'
loglevel = settings.LOG_LEVEL.lower()
access_log_format = '%(h)s %(l)s %(u)s %(t)s "%(r)s" %(s)s %(b)s "%(f)s" "%(a)s" %(L)s'

# Cada worker tem o próprio WhatsAppClientManager; com mais de um worker o
# gateway precisa rotear os eventos para o processo certo.
preload_app = False
