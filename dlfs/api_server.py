"""
api_server.py
~~~~~~~~~~~~~

Flask REST API with WebSocket progress updates for training two-layer
networks on MNIST.

Endpoints cover creating networks, training them in the background,
running predictions, rendering test digits, and managing saved networks.

The server uses:
- Flask for REST endpoints
- Flask-SocketIO for training progress events
- Gevent for cooperative background training
- SQLite (via dlfs.model_persistence) for saved networks
"""

import base64
import logging
import os
import sys
import uuid
from io import BytesIO
from typing import Any, Dict, Optional

import gevent
import numpy as np
from flask import Flask, jsonify, request
from flask_cors import CORS
from flask_socketio import SocketIO

# Non-GUI backend, the server renders to memory only
import matplotlib
matplotlib.use('Agg')
import matplotlib.pyplot as plt

from dlfs import mnist_loader
from dlfs.errors import ShapeError
from dlfs.functions import argmax, softmax
from dlfs.matrix import Matrix
from dlfs.model_persistence import (
    DEFAULT_MODEL_DIR,
    delete_network,
    delete_old_networks,
    list_saved_networks,
    load_network,
    save_network,
)
from dlfs.network import TwoLayerNet
from dlfs.optimizers import OPTIMIZERS, create_optimizer

# ============================================================================
# LOGGING SETUP
# ============================================================================


def configure_logging() -> None:
    """
    Configure root logging from LOG_LEVEL; in production (FLASK_ENV) quieten
    the Socket.IO and werkzeug loggers.
    """
    log_level = getattr(logging, os.getenv('LOG_LEVEL', 'INFO').upper(), logging.INFO)
    logging.basicConfig(
        level=log_level,
        format='%(asctime)s - %(name)s - %(levelname)s - %(message)s'
    )

    if os.getenv('FLASK_ENV') == 'production':
        for logger_name in ['socketio', 'engineio', 'engineio.server',
                            'socketio.server', 'werkzeug']:
            logging.getLogger(logger_name).setLevel(logging.WARNING)
        # Per-iteration loss lines are too chatty for production
        logging.getLogger('dlfs.network').setLevel(logging.WARNING)


configure_logging()
logger = logging.getLogger(__name__)

# ============================================================================
# FLASK APP SETUP
# ============================================================================

app = Flask(__name__)
app.config['MODEL_DIR'] = DEFAULT_MODEL_DIR
# Test examples used to measure accuracy after training
app.config['EVAL_LIMIT'] = int(os.getenv('EVAL_LIMIT', '1000'))
CORS(app, resources={r"/*": {"origins": "*"}})

is_production = os.getenv('FLASK_ENV') == 'production'

socketio = SocketIO(
    app,
    cors_allowed_origins="*",
    async_mode='gevent',
    logger=not is_production,
    engineio_logger=not is_production
)

# ============================================================================
# GLOBAL STATE
# ============================================================================

# Networks loaded in memory: {network_id: network_info}
active_networks: Dict[str, Dict[str, Any]] = {}

# Training jobs being tracked: {job_id: job_info}
training_jobs: Dict[str, Dict[str, Any]] = {}

# MNIST datasets, loaded on first use
datasets: Dict[str, mnist_loader.MnistDataset] = {}

DEFAULT_LAYER_SIZES = (784, 50, 10)

RUNNING_JOB_STATUSES = frozenset({'pending', 'training'})
FINISHED_JOB_STATUSES = frozenset({'completed', 'failed'})


def get_datasets() -> Optional[Dict[str, mnist_loader.MnistDataset]]:
    """
    Load MNIST once and cache it.

    Returns:
        dict with 'training' and 'test' datasets, or None if unavailable
    """
    if not datasets:
        try:
            training, _, test = mnist_loader.load_data()
        except FileNotFoundError as e:
            logger.error(f"MNIST data unavailable: {e}")
            return None
        datasets['training'] = training
        datasets['test'] = test
    return datasets


def reload_saved_networks() -> None:
    """Restore saved networks into memory after a restart."""
    loaded_count = 0
    for net_info in list_saved_networks(app.config['MODEL_DIR']):
        network_id = net_info['network_id']
        net = load_network(network_id, app.config['MODEL_DIR'])
        if net is None:
            logger.warning(f"Failed to load network {network_id}")
            continue
        active_networks[network_id] = {
            'network': net,
            'architecture': net_info['architecture'],
            'trained': net_info['trained'],
            'accuracy': net_info['accuracy'],
        }
        loaded_count += 1
    logger.info(f"Reloaded {loaded_count} network(s) from database")


def cleanup_finished_training_jobs() -> int:
    """
    Remove completed or failed training jobs from memory.

    Returns:
        int: Number of jobs removed
    """
    finished = [
        job_id for job_id, job_info in training_jobs.items()
        if job_info.get('status') in FINISHED_JOB_STATUSES
    ]
    for job_id in finished:
        del training_jobs[job_id]

    if finished:
        logger.info(f"Cleaned up {len(finished)} finished training job(s)")
    return len(finished)


def has_running_job(network_id: str) -> bool:
    """True if a pending or running job is training ``network_id``."""
    return any(
        job.get('network_id') == network_id and job.get('status') in RUNNING_JOB_STATUSES
        for job in training_jobs.values()
    )


# ============================================================================
# VALIDATION HELPERS
# ============================================================================


def _positive_int(value: Any) -> bool:
    return isinstance(value, int) and not isinstance(value, bool) and value > 0


def _positive_number(value: Any) -> bool:
    return (isinstance(value, (int, float)) and not isinstance(value, bool)
            and value > 0)


# ============================================================================
# API ENDPOINTS
# ============================================================================


@app.route('/api/status', methods=['GET'])
def get_status():
    """Server status with counts of networks and running training jobs."""
    active_training = sum(
        1 for job in training_jobs.values()
        if job.get('status') in RUNNING_JOB_STATUSES
    )
    return jsonify({
        'status': 'online',
        'active_networks': len(active_networks),
        'training_jobs': active_training,
    }), 200


@app.route('/api/networks', methods=['POST'])
def create_network():
    """
    Create a new network.

    Request body (all optional):
        {
            'input_size': 784,
            'hidden_size': 50,
            'output_size': 10,
            'weight_init_std': 0.01,
            'seed': 42
        }
    """
    data = request.get_json(silent=True) or {}
    sizes = [
        data.get('input_size', DEFAULT_LAYER_SIZES[0]),
        data.get('hidden_size', DEFAULT_LAYER_SIZES[1]),
        data.get('output_size', DEFAULT_LAYER_SIZES[2]),
    ]
    weight_init_std = data.get('weight_init_std', 0.01)
    seed = data.get('seed')

    if not all(_positive_int(size) for size in sizes):
        logger.warning(f"Invalid architecture requested: {sizes}")
        return jsonify({'error': 'Layer sizes must be positive integers'}), 400
    if not _positive_number(weight_init_std):
        return jsonify({'error': 'weight_init_std must be a positive number'}), 400
    if seed is not None and not isinstance(seed, int):
        return jsonify({'error': 'seed must be an integer'}), 400

    network_id = str(uuid.uuid4())
    net = TwoLayerNet(*sizes, weight_init_std=weight_init_std, seed=seed)
    active_networks[network_id] = {
        'network': net,
        'architecture': net.sizes,
        'trained': False,
        'accuracy': None,
    }
    logger.info(f"Created network {network_id} with architecture {net.sizes}")

    return jsonify({
        'network_id': network_id,
        'architecture': net.sizes,
        'status': 'created',
    }), 201


@app.route('/api/networks', methods=['GET'])
def list_networks():
    """List networks in memory plus any saved ones not yet loaded."""
    in_memory = [
        {
            'network_id': nid,
            'architecture': info['architecture'],
            'trained': info['trained'],
            'accuracy': info['accuracy'],
            'status': 'in_memory',
        }
        for nid, info in active_networks.items()
    ]

    saved_only = []
    for net in list_saved_networks(app.config['MODEL_DIR']):
        if net['network_id'] not in active_networks:
            net['status'] = 'saved'
            saved_only.append(net)

    return jsonify({'networks': in_memory + saved_only}), 200


@app.route('/api/networks/<network_id>', methods=['DELETE'])
def delete_network_endpoint(network_id: str):
    """Delete a network from memory and disk."""
    deleted_from_memory = active_networks.pop(network_id, None) is not None
    deleted_from_disk = delete_network(network_id, app.config['MODEL_DIR'])

    if not deleted_from_memory and not deleted_from_disk:
        logger.warning(f"Delete attempted for non-existent network: {network_id}")
        return jsonify({'error': 'Network not found'}), 404

    logger.info(
        f"Deleted network {network_id}: memory={deleted_from_memory}, "
        f"disk={deleted_from_disk}"
    )
    return jsonify({
        'network_id': network_id,
        'deleted_from_memory': deleted_from_memory,
        'deleted_from_disk': deleted_from_disk,
    }), 200


@app.route('/api/networks/cleanup', methods=['POST'])
def cleanup_old_networks_endpoint():
    """
    Delete saved networks older than ``days`` (default 2, fractions allowed),
    drop them from memory, and forget finished training jobs.
    """
    data = request.get_json(silent=True) or {}
    days = data.get('days', 2)
    if not isinstance(days, (int, float)) or isinstance(days, bool) or days < 0:
        return jsonify({'error': 'days must be a non-negative number'}), 400

    deleted_count = delete_old_networks(days=days, model_dir=app.config['MODEL_DIR'])
    if deleted_count < 0:
        return jsonify({'error': 'Error occurred during cleanup'}), 500

    saved_ids = {net['network_id'] for net in list_saved_networks(app.config['MODEL_DIR'])}
    for nid in [nid for nid, info in active_networks.items()
                if info['trained'] and nid not in saved_ids]:
        del active_networks[nid]

    removed_jobs = cleanup_finished_training_jobs()

    return jsonify({
        'deleted_count': deleted_count,
        'removed_jobs': removed_jobs,
        'days': days,
    }), 200


@app.route('/api/networks/<network_id>/train', methods=['POST'])
def train_network(network_id: str):
    """
    Start training a network in the background.

    Request body (all optional):
        {
            'iterations': 1000,
            'batch_size': 100,
            'learning_rate': 0.1,
            'optimizer': 'sgd'
        }
    """
    if network_id not in active_networks:
        logger.warning(f"Training requested for non-existent network: {network_id}")
        return jsonify({'error': 'Network not found'}), 404

    data = request.get_json(silent=True) or {}
    iterations = data.get('iterations', 1000)
    batch_size = data.get('batch_size', 100)
    learning_rate = data.get('learning_rate', 0.1)
    optimizer_name = data.get('optimizer', 'sgd')

    if not _positive_int(iterations):
        return jsonify({'error': 'iterations must be a positive integer'}), 400
    if not _positive_int(batch_size):
        return jsonify({'error': 'batch_size must be a positive integer'}), 400
    if not _positive_number(learning_rate):
        return jsonify({'error': 'learning_rate must be a positive number'}), 400
    if not isinstance(optimizer_name, str) or optimizer_name.lower() not in OPTIMIZERS:
        return jsonify({
            'error': f'optimizer must be one of {sorted(OPTIMIZERS)}'
        }), 400

    if has_running_job(network_id):
        logger.warning(f"Training already in progress for network {network_id}")
        return jsonify({'error': 'Network is already training'}), 409

    if get_datasets() is None:
        return jsonify({'error': 'Training data not available'}), 503

    job_id = str(uuid.uuid4())
    training_jobs[job_id] = {
        'network_id': network_id,
        'status': 'pending',
        'progress': 0,
        'iterations': iterations,
    }
    logger.info(
        f"Created training job {job_id} for network {network_id}: "
        f"iterations={iterations}, batch_size={batch_size}, "
        f"lr={learning_rate}, optimizer={optimizer_name}"
    )

    socketio.start_background_task(
        train_network_task,
        network_id, job_id, iterations, batch_size, learning_rate, optimizer_name
    )

    return jsonify({
        'job_id': job_id,
        'network_id': network_id,
        'status': 'training_started',
    }), 202


def train_network_task(
    network_id: str,
    job_id: str,
    iterations: int,
    batch_size: int,
    learning_rate: float,
    optimizer_name: str
) -> None:
    """
    Background task that trains a network and reports progress over
    WebSocket.
    """
    data = get_datasets()

    def on_iteration(progress_data: Dict[str, Any]) -> None:
        progress = progress_data['iteration'] / progress_data['total_iterations'] * 100
        training_jobs[job_id]['status'] = 'training'
        training_jobs[job_id]['progress'] = progress
        training_jobs[job_id]['loss'] = progress_data['loss']

        socketio.emit('training_update', {
            'job_id': job_id,
            'network_id': network_id,
            'iteration': progress_data['iteration'],
            'total_iterations': progress_data['total_iterations'],
            'loss': progress_data['loss'],
            'elapsed_time': progress_data['elapsed_time'],
            'progress': progress,
        })

    try:
        if network_id not in active_networks:
            raise RuntimeError(f'Network {network_id} was deleted before training')
        net = active_networks[network_id]['network']
        if data is None:
            raise RuntimeError('Training data not available')

        optimizer = create_optimizer(optimizer_name, learning_rate)
        net.train(
            data['training'],
            iterations,
            batch_size,
            optimizer,
            callback=on_iteration,
            yield_func=lambda: gevent.sleep(0)
        )

        x_test, t_test = data['test'].as_matrices(app.config['EVAL_LIMIT'])
        accuracy = net.accuracy(x_test, t_test)

        info = active_networks.get(network_id)
        if info is None or info['network'] is not net:
            raise RuntimeError(f'Network {network_id} was deleted during training')
        info['trained'] = True
        info['accuracy'] = accuracy
        training_jobs[job_id].update({
            'status': 'completed',
            'progress': 100,
            'accuracy': accuracy,
        })

        save_network(net, network_id, model_dir=app.config['MODEL_DIR'],
                     trained=True, accuracy=accuracy)
        logger.info(f"Training completed for job {job_id}: accuracy {accuracy:.2%}")

        socketio.emit('training_complete', {
            'job_id': job_id,
            'network_id': network_id,
            'status': 'completed',
            'accuracy': accuracy,
            'progress': 100,
        })

    except Exception as e:
        logger.exception(f"Training failed for job {job_id}: {e}")
        training_jobs[job_id]['status'] = 'failed'
        training_jobs[job_id]['error'] = str(e)

        socketio.emit('training_error', {
            'job_id': job_id,
            'network_id': network_id,
            'status': 'failed',
            'error': str(e),
        })


@app.route('/api/training/<job_id>', methods=['GET'])
def get_training_status(job_id: str):
    if job_id not in training_jobs:
        logger.warning(f"Status requested for non-existent job: {job_id}")
        return jsonify({'error': 'Training job not found'}), 404
    return jsonify(training_jobs[job_id]), 200


@app.route('/api/networks/<network_id>/predict', methods=['POST'])
def predict(network_id: str):
    """
    Classify a batch of inputs.

    Request body:
        {'inputs': [[...], [...]]}  # one row per example

    Returns:
        JSON with logits, softmax probabilities and predicted classes
    """
    if network_id not in active_networks:
        return jsonify({'error': 'Network not found'}), 404

    data = request.get_json(silent=True) or {}
    inputs = data.get('inputs')
    if not isinstance(inputs, list) or not inputs or \
            not all(isinstance(row, list) for row in inputs):
        return jsonify({'error': 'inputs must be a non-empty list of rows'}), 400

    net = active_networks[network_id]['network']
    try:
        logits = net.predict(Matrix(inputs))
    except ShapeError as e:
        return jsonify({'error': str(e)}), 400
    except TypeError:
        return jsonify({'error': 'inputs must contain only numbers'}), 400

    probabilities = logits.map_row(softmax)
    return jsonify({
        'network_id': network_id,
        'logits': logits.to_list(),
        'probabilities': probabilities.to_list(),
        'predictions': [argmax(probabilities.row(i)) for i in range(probabilities.rows)],
    }), 200


# ============================================================================
# EXAMPLE ENDPOINT
# ============================================================================


def create_digit_image(image_data: np.ndarray, predicted: int, actual: int) -> str:
    """
    Render a 28x28 digit with its predicted and actual labels.

    Returns:
        Base64-encoded PNG
    """
    plt.figure(figsize=(3, 3))
    plt.imshow(np.asarray(image_data).reshape(28, 28), cmap='gray')
    plt.title(f"Predicted: {predicted} | Actual: {actual}")
    plt.axis('off')

    buffer = BytesIO()
    plt.savefig(buffer, format='png', bbox_inches='tight')
    plt.close()
    return base64.b64encode(buffer.getvalue()).decode('utf-8')


@app.route('/api/networks/<network_id>/example', methods=['GET'])
def get_example(network_id: str):
    """
    Return a random test digit the network classified correctly or not.

    Query string:
        outcome: 'correct', 'incorrect' or 'any' (default)
    """
    if network_id not in active_networks:
        return jsonify({'error': 'Network not found'}), 404

    outcome = request.args.get('outcome', 'any')
    if outcome not in ('correct', 'incorrect', 'any'):
        return jsonify({'error': "outcome must be 'correct', 'incorrect' or 'any'"}), 400

    data = get_datasets()
    if data is None:
        return jsonify({'error': 'Test data not available'}), 503

    net = active_networks[network_id]['network']
    test = data['test']
    if test.image_size != net.sizes[0]:
        return jsonify({'error': 'Network input size does not match MNIST images'}), 400

    rng = np.random.default_rng()
    max_attempts = 200
    for attempt in range(max_attempts):
        index = int(rng.integers(len(test)))
        image = test.image(index)
        logits = net.predict(Matrix([image.tolist()]))
        predicted = argmax(logits.to_vector())
        actual = int(np.argmax(test.label(index)))

        correct = predicted == actual
        if outcome == 'any' or (outcome == 'correct') == correct:
            logger.debug(f"Found {outcome} example on attempt {attempt + 1}")
            return jsonify({
                'network_id': network_id,
                'example_index': index,
                'predicted_digit': predicted,
                'actual_digit': actual,
                'image_data': create_digit_image(image, predicted, actual),
                'network_output': softmax(logits.to_vector()),
            }), 200

    logger.warning(f"No {outcome} example found after {max_attempts} attempts")
    return jsonify({
        'error': f'No {outcome} example found after {max_attempts} attempts'
    }), 404


# ============================================================================
# SERVER STARTUP
# ============================================================================

if __name__ == '__main__':
    port = int(os.environ.get('PORT', 8000))
    reload_saved_networks()
    logger.info(f"Starting server at http://localhost:{port}/")

    try:
        socketio.run(
            app,
            host='0.0.0.0',
            port=port,
            debug=not is_production,
            use_reloader=False
        )
    except OSError as e:
        if "Address already in use" in str(e):
            logger.error(f"Port {port} is already in use.")
            sys.exit(1)
        raise
