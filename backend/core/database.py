import logging
from datetime import datetime
from typing import Dict, List, Optional, Any

from bson import ObjectId
from bson.errors import InvalidId
from motor.motor_asyncio import AsyncIOMotorClient
from pymongo import ASCENDING, DESCENDING, ReturnDocument
from pymongo.errors import DuplicateKeyError

from core.config import settings

logger = logging.getLogger(__name__)


def to_object_id(value: Any) -> Optional[ObjectId]:
    """Convert a string id to ObjectId, None if it is not a valid id."""
    if isinstance(value, ObjectId):
        return value
    if value is None:
        return None
    try:
        return ObjectId(value)
    except (InvalidId, TypeError):
        return None


def _no_overlap(appointment_id: str, start: datetime, end: datetime) -> Dict:
    """Filter matching a schedule with no other interval overlapping [start, end)."""
    return {
        "intervals": {
            "$not": {
                "$elemMatch": {
                    "appointment_id": {"$ne": appointment_id},
                    "start": {"$lt": end},
                    "end": {"$gt": start},
                }
            }
        }
    }


class DatabaseManager:
    def __init__(self, uri: Optional[str] = None, db_name: Optional[str] = None):
        self.uri = uri or settings.mongodb_uri
        self.db_name = db_name or settings.mongodb_db_name
        self.client = None
        self.db = None
        self.connected = False

    async def connect(self):
        """Connect to MongoDB"""
        if self.connected:
            return

        try:
            self.client = AsyncIOMotorClient(self.uri)
            self.db = self.client[self.db_name]

            # Test connection
            await self.client.admin.command("ping")
            self.connected = True

            await self._create_indexes()

            logger.info(f"[Database] Connected to {self.db_name}")

        except Exception as e:
            logger.error(f"[Database] Connection failed: {e}")
            raise

    async def _create_indexes(self):
        """Create database indexes"""
        try:
            await self.db.users.create_index("email", unique=True)
            await self.db.users.create_index([("role", ASCENDING), ("is_active", ASCENDING)])

            await self.db.appointments.create_index(
                [("patient_id", ASCENDING), ("start_time", ASCENDING)]
            )
            await self.db.appointments.create_index(
                [("admin_id", ASCENDING), ("start_time", ASCENDING)]
            )
            await self.db.appointments.create_index(
                [("status", ASCENDING), ("start_time", ASCENDING)]
            )
            await self.db.appointments.create_index(
                [("start_time", ASCENDING), ("end_time", ASCENDING)]
            )

            # One consultation per appointment
            await self.db.consultations.create_index("appointment_id", unique=True)
            await self.db.consultations.create_index("room_id", unique=True)
            await self.db.consultations.create_index("patient_id")
            await self.db.consultations.create_index("practitioner_id")
            await self.db.consultations.create_index("status")
            await self.db.consultations.create_index("start_time")

        except Exception as e:
            logger.error(f"[Database] Index creation error: {e}")

    async def ensure_connected(self):
        """Ensure database connection is active"""
        if not self.connected:
            await self.connect()

    # User operations
    async def create_user(self, user_data: Dict) -> ObjectId:
        """Create a new user"""
        await self.ensure_connected()

        try:
            result = await self.db.users.insert_one(user_data)
            return result.inserted_id

        except Exception as e:
            logger.error(f"[Database] Create user error: {e}")
            raise

    async def get_user_by_id(self, user_id: str) -> Optional[Dict]:
        await self.ensure_connected()

        oid = to_object_id(user_id)
        if oid is None:
            return None
        return await self.db.users.find_one({"_id": oid})

    async def get_user_by_email(self, email: str) -> Optional[Dict]:
        await self.ensure_connected()
        return await self.db.users.find_one({"email": email.lower()})

    async def list_users(self, limit: int = 100) -> List[Dict]:
        await self.ensure_connected()

        cursor = self.db.users.find({}, {"password_hash": 0}).sort("created_at", ASCENDING).limit(limit)
        return await cursor.to_list(length=limit)

    async def update_user(self, user_id: str, updates: Dict) -> Optional[Dict]:
        await self.ensure_connected()

        updates["updated_at"] = datetime.utcnow()
        return await self.db.users.find_one_and_update(
            {"_id": to_object_id(user_id)},
            {"$set": updates},
            projection={"password_hash": 0},
            return_document=ReturnDocument.AFTER,
        )

    async def find_active_provider(self) -> Optional[Dict]:
        """Any active admin; the default provider for bookings"""
        await self.ensure_connected()
        return await self.db.users.find_one(
            {"role": "admin", "is_active": True}, sort=[("created_at", ASCENDING)]
        )

    # Appointment operations
    async def create_appointment(self, appointment_data: Dict) -> ObjectId:
        """Create a new appointment"""
        await self.ensure_connected()

        try:
            result = await self.db.appointments.insert_one(appointment_data)
            return result.inserted_id

        except Exception as e:
            logger.error(f"[Database] Create appointment error: {e}")
            raise

    async def get_appointment(self, appointment_id: str) -> Optional[Dict]:
        await self.ensure_connected()

        oid = to_object_id(appointment_id)
        if oid is None:
            return None
        return await self.db.appointments.find_one({"_id": oid})

    async def list_appointments(
        self,
        patient_id: Optional[str] = None,
        admin_id: Optional[str] = None,
        limit: int = 200,
    ) -> List[Dict]:
        """Appointments ordered by start time, optionally filtered by owner"""
        await self.ensure_connected()

        query = {}
        if patient_id:
            query["patient_id"] = patient_id
        if admin_id:
            query["admin_id"] = admin_id

        cursor = self.db.appointments.find(query).sort("start_time", ASCENDING).limit(limit)
        return await cursor.to_list(length=limit)

    async def find_provider_appointments_between(
        self, admin_id: str, start: datetime, end: datetime
    ) -> List[Dict]:
        """Non-cancelled appointments of a provider intersecting [start, end)"""
        await self.ensure_connected()

        cursor = self.db.appointments.find(
            {
                "admin_id": admin_id,
                "status": {"$ne": "cancelled"},
                "start_time": {"$lt": end},
                "end_time": {"$gt": start},
            },
            {"start_time": 1, "end_time": 1},
        ).sort("start_time", ASCENDING)
        return await cursor.to_list(length=None)

    async def update_appointment(self, appointment_id: str, updates: Dict) -> Optional[Dict]:
        """Apply updates and return the updated appointment"""
        await self.ensure_connected()

        updates["updated_at"] = datetime.utcnow()
        return await self.db.appointments.find_one_and_update(
            {"_id": to_object_id(appointment_id)},
            {"$set": updates},
            return_document=ReturnDocument.AFTER,
        )

    # Schedule claims: one document per owner (provider or patient) holding
    # its booked intervals, so the no-overlap check and the write are a single
    # atomic update on that document.
    async def claim_interval(
        self, owner_id: str, appointment_id: str, start: datetime, end: datetime
    ) -> bool:
        """Claim [start, end) on an owner's schedule. False on overlap."""
        await self.ensure_connected()

        no_overlap = _no_overlap(appointment_id, start, end)

        # Appointment already holds an interval here: move it in place
        result = await self.db.schedules.update_one(
            {"_id": owner_id, "intervals.appointment_id": appointment_id, **no_overlap},
            {"$set": {"intervals.$[entry].start": start, "intervals.$[entry].end": end}},
            array_filters=[{"entry.appointment_id": appointment_id}],
        )
        if result.matched_count:
            return True

        try:
            await self.db.schedules.update_one(
                {"_id": owner_id, **no_overlap},
                {
                    "$push": {
                        "intervals": {
                            "appointment_id": appointment_id,
                            "start": start,
                            "end": end,
                        }
                    }
                },
                upsert=True,
            )
        except DuplicateKeyError:
            # Schedule exists but the filter rejected it: overlap
            return False

        return True

    async def release_interval(self, owner_id: str, appointment_id: str) -> None:
        await self.ensure_connected()

        await self.db.schedules.update_one(
            {"_id": owner_id},
            {"$pull": {"intervals": {"appointment_id": appointment_id}}},
        )

    async def rebuild_schedules(self) -> int:
        """Rebuild every schedule document from non-cancelled appointments"""
        await self.ensure_connected()

        await self.db.schedules.delete_many({})

        count = 0
        cursor = self.db.appointments.find({"status": {"$ne": "cancelled"}})
        async for appointment in cursor:
            entry = {
                "appointment_id": str(appointment["_id"]),
                "start": appointment["start_time"],
                "end": appointment["end_time"],
            }
            for owner_id in (appointment["admin_id"], appointment["patient_id"]):
                await self.db.schedules.update_one(
                    {"_id": owner_id}, {"$push": {"intervals": entry}}, upsert=True
                )
            count += 1

        logger.info(f"[Database] Rebuilt schedules from {count} appointments")
        return count

    # Consultation operations
    async def get_or_create_consultation(self, consultation_data: Dict) -> Dict:
        """Insert the consultation unless one exists for the same appointment"""
        await self.ensure_connected()

        try:
            return await self.db.consultations.find_one_and_update(
                {"appointment_id": consultation_data["appointment_id"]},
                {"$setOnInsert": consultation_data},
                upsert=True,
                return_document=ReturnDocument.AFTER,
            )
        except DuplicateKeyError:
            # Lost an upsert race on the unique index
            return await self.get_consultation_by_appointment(
                consultation_data["appointment_id"]
            )

    async def get_consultation(self, consultation_id: str) -> Optional[Dict]:
        await self.ensure_connected()

        oid = to_object_id(consultation_id)
        if oid is None:
            return None
        return await self.db.consultations.find_one({"_id": oid})

    async def get_consultation_by_appointment(self, appointment_id: str) -> Optional[Dict]:
        await self.ensure_connected()
        return await self.db.consultations.find_one({"appointment_id": appointment_id})

    async def get_consultation_by_room(self, room_id: str) -> Optional[Dict]:
        await self.ensure_connected()
        return await self.db.consultations.find_one({"room_id": room_id})

    async def update_consultation(
        self,
        consultation_id: str,
        updates: Dict,
        expected_status: Optional[str] = None,
    ) -> Optional[Dict]:
        """
        Apply updates and return the updated consultation. With
        expected_status the update only applies while the stored status still
        matches, otherwise None is returned.
        """
        await self.ensure_connected()

        query = {"_id": to_object_id(consultation_id)}
        if expected_status is not None:
            query["status"] = expected_status

        updates["updated_at"] = datetime.utcnow()
        return await self.db.consultations.find_one_and_update(
            query, {"$set": updates}, return_document=ReturnDocument.AFTER
        )

    # Participant and feedback writes touch single fields so concurrent joins,
    # leaves and ratings on the same consultation do not overwrite each other.
    async def update_participant(
        self,
        consultation_id: str,
        user_id: str,
        fields: Dict,
        statuses: Optional[List[str]] = None,
    ) -> Optional[Dict]:
        """Set fields on the user's participant entry. None if there is no entry."""
        await self.ensure_connected()

        query = {"_id": to_object_id(consultation_id), "participants.user_id": user_id}
        if statuses is not None:
            query["status"] = {"$in": statuses}

        updates = {f"participants.$[entry].{key}": value for key, value in fields.items()}
        updates["updated_at"] = datetime.utcnow()
        return await self.db.consultations.find_one_and_update(
            query,
            {"$set": updates},
            array_filters=[{"entry.user_id": user_id}],
            return_document=ReturnDocument.AFTER,
        )

    async def add_participant(
        self,
        consultation_id: str,
        participant: Dict,
        statuses: Optional[List[str]] = None,
    ) -> Optional[Dict]:
        """Append a participant entry unless the user already has one."""
        await self.ensure_connected()

        query = {
            "_id": to_object_id(consultation_id),
            "participants.user_id": {"$ne": participant["user_id"]},
        }
        if statuses is not None:
            query["status"] = {"$in": statuses}

        return await self.db.consultations.find_one_and_update(
            query,
            {"$push": {"participants": participant}, "$set": {"updated_at": datetime.utcnow()}},
            return_document=ReturnDocument.AFTER,
        )

    async def disconnect_participants(
        self, consultation_id: str, left_at: datetime
    ) -> Optional[Dict]:
        """Close every participant entry that has not left yet"""
        await self.ensure_connected()

        return await self.db.consultations.find_one_and_update(
            {"_id": to_object_id(consultation_id)},
            {
                "$set": {
                    "participants.$[open].left_at": left_at,
                    "participants.$[open].connection_status": "disconnected",
                    "updated_at": datetime.utcnow(),
                }
            },
            array_filters=[{"open.left_at": None}],
            return_document=ReturnDocument.AFTER,
        )

    async def set_feedback(self, consultation_id: str, side: str, fields: Dict) -> Optional[Dict]:
        """
        Record one side's feedback ("patient" or "practitioner"). Returns None
        when that side has already rated.
        """
        await self.ensure_connected()

        updates = {f"feedback.{key}": value for key, value in fields.items()}
        updates["updated_at"] = datetime.utcnow()
        return await self.db.consultations.find_one_and_update(
            {"_id": to_object_id(consultation_id), f"feedback.{side}_rating": None},
            {"$set": updates},
            return_document=ReturnDocument.AFTER,
        )

    async def list_user_consultations(
        self, user_id: str, status: Optional[str] = None, limit: int = 10, skip: int = 0
    ) -> List[Dict]:
        await self.ensure_connected()

        query = self._user_consultations_query(user_id, status)
        cursor = (
            self.db.consultations.find(query)
            .sort("start_time", DESCENDING)
            .skip(skip)
            .limit(limit)
        )
        return await cursor.to_list(length=limit)

    async def count_user_consultations(self, user_id: str, status: Optional[str] = None) -> int:
        await self.ensure_connected()
        return await self.db.consultations.count_documents(
            self._user_consultations_query(user_id, status)
        )

    def _user_consultations_query(self, user_id: str, status: Optional[str]) -> Dict:
        query = {"$or": [{"patient_id": user_id}, {"practitioner_id": user_id}]}
        if status:
            query["status"] = status
        return query

    async def list_consultations_by_status(self, status: str) -> List[Dict]:
        await self.ensure_connected()

        cursor = self.db.consultations.find({"status": status}).sort(
            "actual_start_time", DESCENDING
        )
        return await cursor.to_list(length=None)

    async def consultation_stats(self, since: datetime, until: datetime) -> Dict[str, Any]:
        """Counts and averages for the admin overview"""
        await self.ensure_connected()

        status_stats = await self.db.consultations.aggregate(
            [
                {
                    "$group": {
                        "_id": "$status",
                        "count": {"$sum": 1},
                        "avg_duration": {"$avg": "$duration"},
                    }
                }
            ]
        ).to_list(length=None)

        ratings = await self.db.consultations.aggregate(
            [
                {
                    "$group": {
                        "_id": None,
                        "avg_patient_rating": {"$avg": "$feedback.patient_rating"},
                        "avg_practitioner_rating": {"$avg": "$feedback.practitioner_rating"},
                        "avg_technical_rating": {"$avg": "$feedback.technical_rating"},
                    }
                }
            ]
        ).to_list(length=1)

        total = await self.db.consultations.count_documents({})
        today = await self.db.consultations.count_documents(
            {"created_at": {"$gte": since, "$lt": until}}
        )

        average_ratings = ratings[0] if ratings else {}
        average_ratings.pop("_id", None)

        return {
            "status_stats": [
                {"status": row["_id"], "count": row["count"], "avg_duration": row["avg_duration"]}
                for row in status_stats
            ],
            "total_consultations": total,
            "today_consultations": today,
            "average_ratings": average_ratings,
        }

    async def close(self):
        """Close database connection"""
        if self.client:
            self.client.close()
            self.connected = False
            logger.info("[Database] Connection closed")
