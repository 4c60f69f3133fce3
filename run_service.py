# run_service.py
import os, sys, threading, traceback, datetime, logging

from finplan_sim.config import ServiceConfig

# ---------- figure out base dir next to this script ----------
BASE_DIR = os.path.dirname(os.path.abspath(__file__))

config = ServiceConfig.from_env()
LOG_DIR = config.log_dir if os.path.isabs(config.log_dir) else os.path.join(BASE_DIR, config.log_dir)
os.makedirs(LOG_DIR, exist_ok=True)

# ---------- log to file and stderr ----------
log_path = os.path.join(LOG_DIR, "service.log")
logging.basicConfig(
    level=config.log_level,
    format="%(asctime)s %(levelname)s [%(name)s] %(message)s",
    handlers=[
        logging.FileHandler(log_path, encoding="utf-8"),
        logging.StreamHandler(sys.stderr),
    ],
)
logger = logging.getLogger("run_service")
logger.info("[BOOT] starting at %s", datetime.datetime.now().isoformat())
logger.info("[BOOT] BASE_DIR=%s", BASE_DIR)


# ---------- uncaught exceptions -> crash file, keep serving ----------
def _write_crash(exctype, value, tb):
    ts = datetime.datetime.now().strftime("%Y%m%d-%H%M%S")
    crash_file = os.path.join(LOG_DIR, f"crash_{ts}.log")
    with open(crash_file, "w", encoding="utf-8") as f:
        traceback.print_exception(exctype, value, tb, file=f)
    logger.error("Uncaught exception logged to %s", crash_file)


def _excepthook(exctype, value, tb):
    _write_crash(exctype, value, tb)


def _thread_excepthook(args):
    if args.exc_type is SystemExit:
        return
    logger.error("Uncaught exception in thread %s", getattr(args.thread, "name", "?"))
    _write_crash(args.exc_type, args.exc_value, args.exc_traceback)


sys.excepthook = _excepthook
threading.excepthook = _thread_excepthook

# ---------- START SERVICE ----------
if __name__ == "__main__":
    from finplan_sim.core.kernel import KernelHandle
    from finplan_sim.service.app import create_app

    handle = KernelHandle()
    if not handle.initialize():
        # keep serving so /health can report the failure
        logger.error("[BOOT] kernel failed to initialize: %s", handle.error)

    app = create_app(config, handle)
    logger.info("[BOOT] listening on http://%s:%d", config.host, config.port)
    logger.info("  GET  /health")
    logger.info("  POST /simulate")
    app.run(host=config.host, port=config.port, threaded=True)
