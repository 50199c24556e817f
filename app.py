# app.py
import json
import logging
import os
import threading
import time
from uuid import uuid4

from flask import Flask, jsonify, request
from flask_socketio import SocketIO

from geocast_engine import config  # use the module to set flags
from geocast_engine.geo_models import GeoRegion, grid_regions
from geocast_engine.plotting import render_topology
from geocast_engine.simulator import GeocastSimulator

logger = logging.getLogger(__name__)

app = Flask(__name__)
socketio = SocketIO(app)
simulator = None
sim_thread = None
current_run_id = None

PLOT_DIR = 'static/results'


def build_regions(cfg, area_size):
    """Regions from the request: explicit rectangles, or a cols x rows grid."""
    if cfg.get('regions'):
        return [GeoRegion.rectangle(r['id'], r['x0'], r['y0'], r['x1'], r['y1'])
                for r in cfg['regions']]
    cols, rows = cfg.get('grid', config.DEFAULT_GRID)
    return grid_regions(area_size, cols, rows)


def build_simulator(cfg):
    area_size_val = cfg.get('areaSize', config.DEFAULT_AREA_SIZE[0])
    area_size = (area_size_val, area_size_val)
    return GeocastSimulator(
        num_nodes=cfg.get('numNodes', config.DEFAULT_NUM_NODES),
        area_size=area_size,
        regions=build_regions(cfg, area_size),
        protocol=cfg.get('protocol', 'EVR'),
        sim_time=cfg.get('simTime', config.DEFAULT_SIM_TIME),
        msg_interval=cfg.get('msgInterval', config.DEFAULT_MSG_INTERVAL),
        msg_ttl=cfg.get('msgTtl', config.DEFAULT_MSG_TTL),
        node_speed=cfg.get('nodeSpeed', config.DEFAULT_NODE_SPEED),
        tx_range=cfg.get('txRange', config.DEFAULT_TX_RANGE),
        pause_time=cfg.get('pauseTime', config.DEFAULT_PAUSE_TIME),
        warmup=cfg.get('warmup', config.DEFAULT_WARMUP),
        cooldown=cfg.get('cooldown', config.DEFAULT_COOLDOWN),
        seed=cfg.get('seed'),
    )


@app.route('/')
def index():
    running = bool(sim_thread and sim_thread.is_alive())
    return jsonify({"status": "running" if running else "idle", "run_id": current_run_id})


def stream_simulation(run_id, sim):
    """Iterate a run and emit its events with run_id so the frontend can filter stale runs."""
    try:
        for event in sim.run():
            if config.get_stop():
                break
            event['run_id'] = run_id
            socketio.emit('sim_update', event)
            if event.get('type') == 'final_metrics':
                socketio.emit('sim_complete', event)
    except Exception as e:
        logger.exception(f"[{run_id}] Simulation error")
        socketio.emit('sim_error', {'error': str(e), 'run_id': run_id})
        return

    # run() may also return early on the stop flag without yielding again
    if config.get_stop():
        logger.info(f"[{run_id}] Simulation stopped by user")
        socketio.emit('sim_stopped', {'message': 'Simulation stopped by user', 'run_id': run_id})


@app.route('/start_simulation', methods=['POST'])
def start_simulation():
    global simulator, sim_thread, current_run_id
    cfg = request.json or {}
    logger.info(f"Received config: {cfg}")

    # Stop existing simulation if running
    if simulator and sim_thread and sim_thread.is_alive():
        logger.info("Stopping previous simulation...")
        config.set_stop()
        simulator.stop_flag = True

        # wait up to 3 seconds for the thread to exit
        wait_start = time.time()
        while sim_thread.is_alive() and (time.time() - wait_start) < 3.0:
            time.sleep(0.05)

        if sim_thread.is_alive():
            logger.warning("Previous simulation thread still alive after timeout. Continuing with new run.")

    try:
        simulator = build_simulator(cfg)
    except (KeyError, ValueError) as e:
        return jsonify({"status": "error", "error": str(e)}), 400

    run_id = str(uuid4())
    current_run_id = run_id

    sim_thread = threading.Thread(target=stream_simulation, args=(run_id, simulator), daemon=True)
    sim_thread.start()

    return jsonify({"status": "started", "run_id": run_id})


@app.route('/stop_simulation', methods=['POST'])
def stop_simulation_route():
    config.set_stop()
    return jsonify({"status": "stopping"})


@app.route('/snapshot')
def snapshot():
    if simulator is None:
        return jsonify({"error": "no simulation"}), 404
    os.makedirs(PLOT_DIR, exist_ok=True)
    plot_path = render_topology(simulator, os.path.join(PLOT_DIR, f"{current_run_id}_topology.png"))
    return jsonify({"plot": plot_path})


@app.route('/get_history')
def get_history():
    simulations = []
    sim_dir = config.RESULTS_DIR
    if not os.path.exists(sim_dir):
        os.makedirs(sim_dir, exist_ok=True)
    for file in sorted(os.listdir(sim_dir)):
        if file.endswith('.json'):
            with open(os.path.join(sim_dir, file)) as f:
                try:
                    simulations.append(json.load(f))
                except json.JSONDecodeError:
                    logger.warning(f"Skipping unreadable result file {file}")
    return jsonify(simulations)


if __name__ == '__main__':
    logging.basicConfig(level=logging.INFO)
    os.makedirs(config.RESULTS_DIR, exist_ok=True)
    socketio.run(app, debug=True)
