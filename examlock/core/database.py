# examlock/core/database.py
import json
import logging
import os
import tempfile
import threading
from abc import ABC, abstractmethod
from pathlib import Path
from typing import List, Dict, Any, Optional, Type, TypeVar

import pymongo
from pydantic import BaseModel
from pydantic import ValidationError as PydanticValidationError
from pymongo.errors import PyMongoError, DuplicateKeyError

from .config import config, Config
from .errors import ValidationError, PersistenceError, ConflictError
from .utils import ValidationUtils, generate_id
from ..models.schemas import Test, TestResult, User

logger = logging.getLogger(__name__)

ModelT = TypeVar("ModelT", bound=BaseModel)


def parse_record(model: Type[ModelT], data: Any, source: str) -> ModelT:
    """Validate a raw stored document into a typed record"""
    try:
        return model.model_validate(data)
    except PydanticValidationError as e:
        raise ValidationError(f"Malformed {model.__name__} record in {source}: {e.errors()[0]['msg']}")


class DatabaseManager(ABC):
    """Storage contract for tests, results and users"""

    backend = "abstract"

    # ---------- tests ----------
    @abstractmethod
    def list_tests_by_department(self, department: str) -> List[Test]: ...

    @abstractmethod
    def list_all_tests(self) -> Dict[str, List[Test]]: ...

    @abstractmethod
    def get_test(self, test_id: str) -> Optional[Test]: ...

    @abstractmethod
    def insert_test(self, test: Test) -> str: ...

    @abstractmethod
    def delete_test(self, test_id: str) -> bool: ...

    # ---------- results ----------
    @abstractmethod
    def insert_result(self, result: TestResult) -> str: ...

    @abstractmethod
    def get_result(self, result_id: str) -> Optional[TestResult]: ...

    @abstractmethod
    def list_results(self, user_id: Optional[str] = None) -> List[TestResult]: ...

    @abstractmethod
    def delete_result(self, result_id: str) -> bool: ...

    # ---------- users ----------
    @abstractmethod
    def get_user(self, user_id: str) -> Optional[User]: ...

    @abstractmethod
    def get_user_by_email(self, email: str) -> Optional[User]: ...

    @abstractmethod
    def insert_user(self, user: User) -> str: ...

    # ---------- lifecycle ----------
    @abstractmethod
    def validate_connection(self) -> Dict[str, Any]: ...

    def close(self):
        """Close database connections"""

    @staticmethod
    def _sort_results(results: List[TestResult]) -> List[TestResult]:
        # Most recent first
        return sorted(results, key=lambda r: r.submitted_at, reverse=True)


class FileDatabase(DatabaseManager):
    """JSON documents on disk with in-memory id indexes.

    Layout under the data directory:
        tests/<department>/tests.json   list of tests for one department
        results/<result_id>.json        one result per file
        users/users.json                list of users
    """

    backend = "file"

    def __init__(self, data_dir: Optional[str] = None, cfg: Config = config):
        self.data_dir = Path(data_dir or cfg.DATA_DIR)
        self.tests_dir = self.data_dir / "tests"
        self.results_dir = self.data_dir / "results"
        self.users_file = self.data_dir / "users" / "users.json"

        # Persistence runs in worker threads, writes are serialized
        self._lock = threading.Lock()

        self._tests: Dict[str, Test] = {}
        self._results: Dict[str, TestResult] = {}
        self._users: Dict[str, User] = {}
        self._users_by_email: Dict[str, str] = {}

        logger.info(f"📁 Initializing file database at {self.data_dir}")
        try:
            for directory in (self.tests_dir, self.results_dir, self.users_file.parent):
                directory.mkdir(parents=True, exist_ok=True)
        except OSError as e:
            raise PersistenceError(f"Data directory unavailable: {e}")

        self._load_indexes()

    # ==================== Index loading ====================

    def _load_indexes(self):
        for tests_file in sorted(self.tests_dir.glob("*/tests.json")):
            for raw in self._read_json(tests_file, default=[]):
                test = self._parse_or_skip(Test, raw, tests_file)
                if test:
                    self._tests[test.id] = test

        for result_file in sorted(self.results_dir.glob("*.json")):
            result = self._parse_or_skip(TestResult, self._read_json(result_file, default=None), result_file)
            if result:
                result.id = result.id or result_file.stem
                self._results[result.id] = result

        for raw in self._read_json(self.users_file, default=[]):
            user = self._parse_or_skip(User, raw, self.users_file)
            if user:
                self._users[user.id] = user
                self._users_by_email[ValidationUtils.normalize_email(user.email)] = user.id

        logger.info(
            f"✅ Indexed {len(self._tests)} tests, {len(self._results)} results, "
            f"{len(self._users)} users"
        )

    @staticmethod
    def _parse_or_skip(model: Type[ModelT], raw: Any, source: Path) -> Optional[ModelT]:
        try:
            return parse_record(model, raw, source.name)
        except ValidationError as e:
            logger.error(f"Skipping record: {e.message}")
            return None

    @staticmethod
    def _read_json(path: Path, default: Any) -> Any:
        if not path.exists():
            return default
        try:
            with open(path, "r", encoding="utf-8") as f:
                return json.load(f)
        except json.JSONDecodeError as e:
            logger.error(f"Unreadable JSON in {path}: {e}")
            return default
        except OSError as e:
            raise PersistenceError(f"Failed to read {path.name}: {e}")

    @staticmethod
    def _write_json(path: Path, payload: Any):
        """Write via a temp file and rename so readers never see partial data"""
        try:
            path.parent.mkdir(parents=True, exist_ok=True)
            fd, tmp_path = tempfile.mkstemp(dir=path.parent, suffix=".tmp")
            with os.fdopen(fd, "w", encoding="utf-8") as f:
                json.dump(payload, f, indent=2)
            os.replace(tmp_path, path)
        except OSError as e:
            raise PersistenceError(f"Failed to write {path.name}: {e}")

    def _department_file(self, department: str) -> Path:
        ValidationUtils.validate_record_id(department, "Department")
        return self.tests_dir / department / "tests.json"

    def _department_tests(self, department: str) -> List[Test]:
        return [t for t in self._tests.values() if t.department == department]

    # ==================== Tests ====================

    def list_tests_by_department(self, department: str) -> List[Test]:
        return self._department_tests(department)

    def list_all_tests(self) -> Dict[str, List[Test]]:
        grouped: Dict[str, List[Test]] = {}
        for test in self._tests.values():
            grouped.setdefault(test.department, []).append(test)
        return grouped

    def get_test(self, test_id: str) -> Optional[Test]:
        return self._tests.get(test_id)

    def insert_test(self, test: Test) -> str:
        with self._lock:
            if test.id in self._tests:
                raise ConflictError(f"Test {test.id} already exists")

            tests = self._department_tests(test.department) + [test]
            self._write_json(self._department_file(test.department), [t.to_document() for t in tests])
            self._tests[test.id] = test

        logger.info(f"✅ Test saved: {test.id} ({test.department})")
        return test.id

    def delete_test(self, test_id: str) -> bool:
        with self._lock:
            test = self._tests.get(test_id)
            if not test:
                return False

            remaining = [t for t in self._department_tests(test.department) if t.id != test_id]
            self._write_json(self._department_file(test.department), [t.to_document() for t in remaining])
            del self._tests[test_id]

        logger.info(f"🗑️ Test deleted: {test_id}")
        return True

    # ==================== Results ====================

    def insert_result(self, result: TestResult) -> str:
        # Results are write-once; ids are always assigned by the store
        stored = result.model_copy(update={"id": generate_id()})
        with self._lock:
            if stored.id in self._results:
                raise ConflictError(f"Result {stored.id} already exists")
            self._write_json(self.results_dir / f"{stored.id}.json", stored.to_document())
            self._results[stored.id] = stored

        logger.info(f"✅ Result saved: {stored.id}")
        return stored.id

    def get_result(self, result_id: str) -> Optional[TestResult]:
        return self._results.get(result_id)

    def list_results(self, user_id: Optional[str] = None) -> List[TestResult]:
        results = [
            r for r in self._results.values()
            if user_id is None or r.user_id == user_id
        ]
        return self._sort_results(results)

    def delete_result(self, result_id: str) -> bool:
        path = self.results_dir / f"{result_id}.json"
        with self._lock:
            if result_id not in self._results:
                return False
            try:
                path.unlink(missing_ok=True)
            except OSError as e:
                raise PersistenceError(f"Failed to delete result {result_id}: {e}")
            del self._results[result_id]

        logger.info(f"🗑️ Result deleted: {result_id}")
        return True

    # ==================== Users ====================

    def get_user(self, user_id: str) -> Optional[User]:
        return self._users.get(user_id)

    def get_user_by_email(self, email: str) -> Optional[User]:
        user_id = self._users_by_email.get(ValidationUtils.normalize_email(email))
        return self._users.get(user_id) if user_id else None

    def insert_user(self, user: User) -> str:
        email_key = ValidationUtils.normalize_email(user.email)
        with self._lock:
            if email_key in self._users_by_email:
                raise ConflictError("User with this email already exists")

            users = list(self._users.values()) + [user]
            self._write_json(self.users_file, [u.to_document() for u in users])
            self._users[user.id] = user
            self._users_by_email[email_key] = user.id

        logger.info(f"✅ User saved: {user.id}")
        return user.id

    # ==================== Lifecycle ====================

    def validate_connection(self) -> Dict[str, Any]:
        writable = os.access(self.data_dir, os.W_OK)
        return {
            "backend": self.backend,
            "data_dir": str(self.data_dir),
            "writable": writable,
            "tests": len(self._tests),
            "results": len(self._results),
            "users": len(self._users),
            "overall": writable
        }


class MongoDatabase(DatabaseManager):
    """MongoDB-backed storage; ids are indexed fields on each collection"""

    backend = "mongo"

    def __init__(self, client: Optional[pymongo.MongoClient] = None, cfg: Config = config):
        logger.info("🔄 Initializing MongoDB database")
        self.cfg = cfg
        try:
            if client is None:
                client = pymongo.MongoClient(
                    cfg.MONGO_URI,
                    serverSelectionTimeoutMS=cfg.MONGO_TIMEOUT_MS,
                    tz_aware=True,
                    maxPoolSize=10,
                    minPoolSize=1
                )
                client.admin.command('ping')

            self.mongo_client = client
            self.db = client[cfg.MONGO_DB_NAME]
            self.tests_collection = self.db[cfg.TESTS_COLLECTION]
            self.results_collection = self.db[cfg.RESULTS_COLLECTION]
            self.users_collection = self.db[cfg.USERS_COLLECTION]
        except PyMongoError as e:
            logger.error(f"❌ MongoDB connection failed: {e}")
            raise PersistenceError(f"MongoDB connection failure: {e}")

        self._create_indexes()
        logger.info("✅ MongoDB connection established")

    def _create_indexes(self):
        try:
            self.tests_collection.create_index("id", unique=True)
            self.tests_collection.create_index("department")
            self.results_collection.create_index("id", unique=True)
            self.results_collection.create_index("userId")
            self.results_collection.create_index("submittedAt")
            self.users_collection.create_index("id", unique=True)
            self.users_collection.create_index("emailNormalized", unique=True)
            logger.info("✅ Database indexes created")
        except PyMongoError as idx_error:
            logger.warning(f"⚠️ Index creation failed: {idx_error}")

    @staticmethod
    def _document(record: BaseModel) -> Dict[str, Any]:
        # Python mode keeps datetimes native for BSON
        return record.model_dump(by_alias=True)

    def _find_one(self, collection, query: Dict[str, Any], model: Type[ModelT]) -> Optional[ModelT]:
        try:
            doc = collection.find_one(query, {"_id": 0, "emailNormalized": 0})
        except PyMongoError as e:
            raise PersistenceError(f"{model.__name__} lookup failed: {e}")
        return parse_record(model, doc, collection.name) if doc else None

    def _find_many(self, collection, query: Dict[str, Any], model: Type[ModelT]) -> List[ModelT]:
        try:
            docs = list(collection.find(query, {"_id": 0}))
        except PyMongoError as e:
            raise PersistenceError(f"{model.__name__} query failed: {e}")
        return [parse_record(model, doc, collection.name) for doc in docs]

    # ==================== Tests ====================

    def list_tests_by_department(self, department: str) -> List[Test]:
        return self._find_many(self.tests_collection, {"department": department}, Test)

    def list_all_tests(self) -> Dict[str, List[Test]]:
        grouped: Dict[str, List[Test]] = {}
        for test in self._find_many(self.tests_collection, {}, Test):
            grouped.setdefault(test.department, []).append(test)
        return grouped

    def get_test(self, test_id: str) -> Optional[Test]:
        return self._find_one(self.tests_collection, {"id": test_id}, Test)

    def insert_test(self, test: Test) -> str:
        try:
            self.tests_collection.insert_one(self._document(test))
        except DuplicateKeyError:
            raise ConflictError(f"Test {test.id} already exists")
        except PyMongoError as e:
            raise PersistenceError(f"Test save failed: {e}")

        logger.info(f"✅ Test saved to MongoDB: {test.id}")
        return test.id

    def delete_test(self, test_id: str) -> bool:
        try:
            return self.tests_collection.delete_one({"id": test_id}).deleted_count > 0
        except PyMongoError as e:
            raise PersistenceError(f"Test delete failed: {e}")

    # ==================== Results ====================

    def insert_result(self, result: TestResult) -> str:
        # Results are write-once; ids are always assigned by the store
        stored = result.model_copy(update={"id": generate_id()})
        try:
            self.results_collection.insert_one(self._document(stored))
        except DuplicateKeyError:
            raise ConflictError(f"Result {stored.id} already exists")
        except PyMongoError as e:
            logger.error(f"❌ Save failed: {e}")
            raise PersistenceError(f"Results save failed: {e}")

        logger.info(f"✅ Result saved to MongoDB: {stored.id}")
        return stored.id

    def get_result(self, result_id: str) -> Optional[TestResult]:
        return self._find_one(self.results_collection, {"id": result_id}, TestResult)

    def list_results(self, user_id: Optional[str] = None) -> List[TestResult]:
        query = {"userId": user_id} if user_id is not None else {}
        return self._sort_results(self._find_many(self.results_collection, query, TestResult))

    def delete_result(self, result_id: str) -> bool:
        try:
            return self.results_collection.delete_one({"id": result_id}).deleted_count > 0
        except PyMongoError as e:
            raise PersistenceError(f"Result delete failed: {e}")

    # ==================== Users ====================

    def get_user(self, user_id: str) -> Optional[User]:
        return self._find_one(self.users_collection, {"id": user_id}, User)

    def get_user_by_email(self, email: str) -> Optional[User]:
        return self._find_one(
            self.users_collection,
            {"emailNormalized": ValidationUtils.normalize_email(email)},
            User
        )

    def insert_user(self, user: User) -> str:
        if self.get_user_by_email(user.email):
            raise ConflictError("User with this email already exists")

        document = self._document(user)
        document["emailNormalized"] = ValidationUtils.normalize_email(user.email)
        try:
            self.users_collection.insert_one(document)
        except DuplicateKeyError:
            raise ConflictError("User with this email already exists")
        except PyMongoError as e:
            raise PersistenceError(f"User save failed: {e}")

        logger.info(f"✅ User saved to MongoDB: {user.id}")
        return user.id

    # ==================== Lifecycle ====================

    def validate_connection(self) -> Dict[str, Any]:
        status = {"backend": self.backend, "mongodb": False, "overall": False}
        try:
            self.mongo_client.admin.command('ping')
            status["mongodb"] = True
            status["overall"] = True
        except PyMongoError as e:
            logger.error(f"❌ MongoDB validation failed: {e}")
        return status

    def close(self):
        if self.mongo_client:
            self.mongo_client.close()
            logger.info("✅ Database connections closed")


# Singleton pattern for database manager
_db_manager: Optional[DatabaseManager] = None

def create_db_manager(cfg: Config = config) -> DatabaseManager:
    """Build the storage backend named by the configuration"""
    if cfg.STORAGE_BACKEND == "mongo":
        return MongoDatabase(cfg=cfg)
    return FileDatabase(cfg=cfg)

def get_db_manager() -> DatabaseManager:
    """Get database manager instance (singleton)"""
    global _db_manager
    if _db_manager is None:
        _db_manager = create_db_manager()
    return _db_manager

def close_db_manager():
    """Close database manager instance"""
    global _db_manager
    if _db_manager:
        _db_manager.close()
        _db_manager = None
