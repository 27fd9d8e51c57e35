"""
model_persistence.py
~~~~~~~~~~~~~~~~~~~~

SQLite storage for trained two-layer networks.

Each row holds the pickled network plus its architecture as JSON so that
listings never need to unpickle anything.
"""

import json
import logging
import os
import pickle
import sqlite3
from contextlib import contextmanager
from typing import Any, Dict, Generator, List, Optional

import numpy as np

from dlfs.matrix import Matrix

logger = logging.getLogger(__name__)

DEFAULT_MODEL_DIR = os.getenv('MODEL_DIR', 'models')
DB_FILENAME = 'networks.db'


class NetworkEncoder(json.JSONEncoder):
    """JSON encoder that understands matrices and numpy values."""

    def default(self, obj: Any) -> Any:
        if isinstance(obj, Matrix):
            return obj.to_list()
        if isinstance(obj, np.ndarray):
            return obj.tolist()
        if isinstance(obj, np.generic):
            return obj.item()
        return super().default(obj)


def _parameter_shapes(architecture: List[int]) -> Dict[str, List[List[int]]]:
    """Weight and bias shapes implied by ``[input, hidden, output]``."""
    pairs = list(zip(architecture[:-1], architecture[1:]))
    return {
        'weights_shape': [[n_in, n_out] for n_in, n_out in pairs],
        'biases_shape': [[1, n_out] for _, n_out in pairs],
    }


class ModelDatabase:
    """
    SQLite database of saved networks.

    The ``networks`` table keeps the pickled network, its architecture,
    whether it has been trained, its test accuracy, and timestamps.
    """

    def __init__(self, db_path: str = os.path.join(DEFAULT_MODEL_DIR, DB_FILENAME)):
        self.db_path = db_path
        db_dir = os.path.dirname(self.db_path)
        if db_dir:
            os.makedirs(db_dir, exist_ok=True)
        self._initialize_schema()

    @contextmanager
    def _get_connection(self) -> Generator[sqlite3.Connection, None, None]:
        """Open a connection that commits on success and rolls back on error."""
        conn = sqlite3.connect(self.db_path)
        conn.row_factory = sqlite3.Row
        try:
            yield conn
            conn.commit()
        except Exception:
            conn.rollback()
            raise
        finally:
            conn.close()

    def _initialize_schema(self) -> None:
        with self._get_connection() as conn:
            conn.execute('''
                CREATE TABLE IF NOT EXISTS networks (
                    network_id TEXT PRIMARY KEY,
                    architecture TEXT NOT NULL,
                    network_data BLOB NOT NULL,
                    trained INTEGER NOT NULL DEFAULT 0,
                    accuracy REAL,
                    created_at TIMESTAMP DEFAULT CURRENT_TIMESTAMP,
                    updated_at TIMESTAMP DEFAULT CURRENT_TIMESTAMP
                )
            ''')
            conn.execute('''
                CREATE INDEX IF NOT EXISTS idx_created_at
                ON networks(created_at DESC)
            ''')

    @staticmethod
    def _row_to_metadata(row: sqlite3.Row) -> Dict[str, Any]:
        architecture = json.loads(row['architecture'])
        metadata = {
            'network_id': row['network_id'],
            'architecture': architecture,
            'trained': bool(row['trained']),
            'accuracy': row['accuracy'],
            'created_at': row['created_at'],
            'updated_at': row['updated_at'],
        }
        metadata.update(_parameter_shapes(architecture))
        return metadata

    def save_network_to_db(
        self,
        network,
        network_id: str,
        trained: bool = True,
        accuracy: Optional[float] = None
    ) -> bool:
        """
        Insert or replace a network.

        The original ``created_at`` survives a replace so that age-based
        cleanup measures time since first save.

        Args:
            network: TwoLayerNet to store
            network_id: Unique identifier
            trained: Whether the network has been trained
            accuracy: Test accuracy in [0, 1]

        Raises:
            ValueError: If accuracy is out of range
        """
        if accuracy is not None and not 0.0 <= accuracy <= 1.0:
            raise ValueError(f"Accuracy must be between 0.0 and 1.0, got {accuracy}")

        network_data = pickle.dumps(network)
        architecture_json = json.dumps(network.sizes, cls=NetworkEncoder)

        with self._get_connection() as conn:
            conn.execute('''
                INSERT INTO networks
                    (network_id, architecture, network_data, trained, accuracy)
                VALUES (?, ?, ?, ?, ?)
                ON CONFLICT(network_id) DO UPDATE SET
                    architecture = excluded.architecture,
                    network_data = excluded.network_data,
                    trained = excluded.trained,
                    accuracy = excluded.accuracy,
                    updated_at = CURRENT_TIMESTAMP
            ''', (
                network_id,
                architecture_json,
                network_data,
                1 if trained else 0,
                accuracy,
            ))

        logger.info(
            f"Saved network '{network_id}' {network.sizes}, "
            f"trained={trained}, accuracy={accuracy}"
        )
        return True

    def load_network_from_db(self, network_id: str):
        """Return the stored network, or None if the id is unknown."""
        with self._get_connection() as conn:
            row = conn.execute(
                'SELECT network_data FROM networks WHERE network_id = ?',
                (network_id,)
            ).fetchone()

        if row is None:
            logger.warning(f"Network '{network_id}' not found")
            return None

        network = pickle.loads(row['network_data'])
        logger.info(f"Loaded network '{network_id}'")
        return network

    def list_networks_from_db(self) -> List[Dict[str, Any]]:
        """Metadata of every stored network, newest first."""
        with self._get_connection() as conn:
            rows = conn.execute('''
                SELECT network_id, architecture, trained, accuracy,
                       created_at, updated_at
                FROM networks
                ORDER BY created_at DESC
            ''').fetchall()

        networks = [self._row_to_metadata(row) for row in rows]
        logger.debug(f"Listed {len(networks)} networks")
        return networks

    def get_network_metadata_from_db(self, network_id: str) -> Optional[Dict[str, Any]]:
        with self._get_connection() as conn:
            row = conn.execute('''
                SELECT network_id, architecture, trained, accuracy,
                       created_at, updated_at
                FROM networks
                WHERE network_id = ?
            ''', (network_id,)).fetchone()

        if row is None:
            logger.warning(f"Metadata for network '{network_id}' not found")
            return None
        return self._row_to_metadata(row)

    def delete_network_from_db(self, network_id: str) -> bool:
        """Delete one network; returns False if it did not exist."""
        with self._get_connection() as conn:
            cursor = conn.execute(
                'DELETE FROM networks WHERE network_id = ?',
                (network_id,)
            )
            deleted = cursor.rowcount > 0

        if deleted:
            logger.info(f"Deleted network '{network_id}'")
        else:
            logger.warning(f"Could not delete network '{network_id}': not found")
        return deleted

    def delete_old_networks_from_db(self, days: float) -> int:
        """
        Delete networks first saved more than ``days`` days ago.

        Args:
            days: Age threshold; 0 removes everything saved before now

        Returns:
            int: Number of networks deleted

        Raises:
            ValueError: If days is negative
        """
        if days < 0:
            raise ValueError(f"days must be non-negative, got {days}")

        with self._get_connection() as conn:
            cursor = conn.execute('''
                DELETE FROM networks
                WHERE julianday('now') - julianday(created_at) > ?
            ''', (days,))
            deleted = cursor.rowcount

        logger.info(f"Deleted {deleted} network(s) older than {days} day(s)")
        return deleted


# Shared instance for the default model directory
_db: Optional[ModelDatabase] = None


def _get_db(model_dir: str) -> ModelDatabase:
    global _db
    if model_dir != DEFAULT_MODEL_DIR:
        return ModelDatabase(db_path=os.path.join(model_dir, DB_FILENAME))
    if _db is None:
        _db = ModelDatabase(db_path=os.path.join(DEFAULT_MODEL_DIR, DB_FILENAME))
    return _db


def _valid_id(network_id: Any) -> bool:
    if not network_id or not isinstance(network_id, str):
        logger.error("Invalid network_id: must be a non-empty string")
        return False
    return True


def save_network(
    network,
    network_id: str,
    model_dir: str = DEFAULT_MODEL_DIR,
    trained: bool = True,
    accuracy: Optional[float] = None
) -> bool:
    """
    Save a network to the database in ``model_dir``.

    Returns:
        bool: True on success; False on invalid input or storage failure

    Example:
        >>> net = TwoLayerNet(784, 50, 10)
        >>> save_network(net, "my_network", trained=False)
        True
    """
    if not _valid_id(network_id):
        return False

    try:
        return _get_db(model_dir).save_network_to_db(
            network, network_id, trained, accuracy
        )
    except ValueError as e:
        logger.error(f"Validation error saving network '{network_id}': {e}")
        return False
    except (AttributeError, pickle.PicklingError) as e:
        logger.error(f"Serialization error saving network '{network_id}': {e}")
        return False
    except sqlite3.Error as e:
        logger.error(f"Database error saving network '{network_id}': {e}")
        return False


def load_network(network_id: str, model_dir: str = DEFAULT_MODEL_DIR):
    """Load a network, or return None if it is missing or unreadable."""
    if not _valid_id(network_id):
        return None

    try:
        return _get_db(model_dir).load_network_from_db(network_id)
    except pickle.UnpicklingError as e:
        logger.error(f"Deserialization error loading network '{network_id}': {e}")
        return None
    except sqlite3.Error as e:
        logger.error(f"Database error loading network '{network_id}': {e}")
        return None


def list_saved_networks(model_dir: str = DEFAULT_MODEL_DIR) -> List[Dict[str, Any]]:
    """Metadata for every saved network; empty on storage failure."""
    try:
        return _get_db(model_dir).list_networks_from_db()
    except sqlite3.Error as e:
        logger.error(f"Database error listing networks: {e}")
        return []
    except json.JSONDecodeError as e:
        logger.error(f"JSON decode error listing networks: {e}")
        return []


def get_network_metadata(
    network_id: str,
    model_dir: str = DEFAULT_MODEL_DIR
) -> Optional[Dict[str, Any]]:
    """Metadata for one network without unpickling it."""
    if not _valid_id(network_id):
        return None

    try:
        return _get_db(model_dir).get_network_metadata_from_db(network_id)
    except sqlite3.Error as e:
        logger.error(f"Database error getting metadata for '{network_id}': {e}")
        return None
    except json.JSONDecodeError as e:
        logger.error(f"JSON decode error getting metadata for '{network_id}': {e}")
        return None


def delete_network(network_id: str, model_dir: str = DEFAULT_MODEL_DIR) -> bool:
    """Delete a saved network; False if missing or on storage failure."""
    if not _valid_id(network_id):
        return False

    try:
        return _get_db(model_dir).delete_network_from_db(network_id)
    except sqlite3.Error as e:
        logger.error(f"Database error deleting network '{network_id}': {e}")
        return False


def delete_old_networks(days: float = 2, model_dir: str = DEFAULT_MODEL_DIR) -> int:
    """
    Delete networks older than ``days`` days.

    Returns:
        int: Number deleted, or -1 on a database error

    Raises:
        ValueError: If days is negative
    """
    if days < 0:
        raise ValueError(f"days must be non-negative, got {days}")

    try:
        return _get_db(model_dir).delete_old_networks_from_db(days)
    except sqlite3.Error as e:
        logger.error(f"Database error deleting old networks: {e}")
        return -1
