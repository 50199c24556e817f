# geocast_engine/config.py

# Global flag to control simulation execution
stop_simulation = False

# Simulation defaults (seconds of simulated time, metres, bytes)
DEFAULT_NUM_NODES = 40
DEFAULT_AREA_SIZE = (1000.0, 1000.0)
DEFAULT_SIM_TIME = 3600.0
DEFAULT_TICK_INTERVAL = 1.0
DEFAULT_REPORT_INTERVAL = 60.0
DEFAULT_NODE_SPEED = 5.0
DEFAULT_PAUSE_TIME = 5.0
DEFAULT_TX_RANGE = 50.0
DEFAULT_TRANSMIT_SPEED = 250000.0  # bytes per second
DEFAULT_MSG_INTERVAL = 30.0
DEFAULT_MSG_TTL = 1200.0
DEFAULT_MSG_SIZE = 5000
DEFAULT_WARMUP = 0.0
DEFAULT_COOLDOWN = 0.0
DEFAULT_GRID = (3, 3)  # region cells per axis when none are given

# EVR router
INITIAL_EVR_RATE = 0.0
# Returned instead of infinity when successive visits share a timestamp
MAX_VISIT_RATE = 1.0e12

RESULTS_DIR = 'data/simulations'


def reset():
    """Reset the global stop flag."""
    global stop_simulation
    stop_simulation = False


def set_stop():
    """Set the stop flag to True."""
    global stop_simulation
    stop_simulation = True


def get_stop():
    """Return the current stop flag."""
    return stop_simulation
