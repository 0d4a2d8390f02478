from __future__ import annotations
from datetime import datetime
from sqlalchemy import Column, String, DateTime, Integer, Float, Boolean, Text, JSON, ForeignKey, UniqueConstraint
from .db import Base


class User(Base):
	__tablename__ = "users"
	id = Column(Integer, primary_key=True, index=True)
	username = Column(String(128), unique=True, nullable=False, index=True)
	email = Column(String(256), unique=True, nullable=False, index=True)
	password_hash = Column(String(256), nullable=False)
	first_name = Column(String(128), nullable=True)
	last_name = Column(String(128), nullable=True)
	school = Column(String(256), nullable=True)
	program = Column(String(256), nullable=True)
	year = Column(String(32), nullable=True)
	program_choice_reason = Column(Text, nullable=True)
	career_goals = Column(Text, nullable=True)
	created_at = Column(DateTime, default=datetime.utcnow, nullable=False)
	updated_at = Column(DateTime, default=datetime.utcnow, onupdate=datetime.utcnow, nullable=False)


class AuthSession(Base):
	__tablename__ = "auth_sessions"
	# jti of the issued token; deleting the row revokes the token
	session_id = Column(String(64), primary_key=True)
	user_id = Column(Integer, ForeignKey("users.id", ondelete="CASCADE"), nullable=False, index=True)
	created_at = Column(DateTime, default=datetime.utcnow, nullable=False)
	last_activity_at = Column(DateTime, default=datetime.utcnow, nullable=False)


class Course(Base):
	__tablename__ = "courses"
	id = Column(Integer, primary_key=True, index=True)
	user_id = Column(Integer, ForeignKey("users.id", ondelete="CASCADE"), nullable=False, index=True)
	course_id = Column(String(64), nullable=False)  # catalogue code, e.g. "CS101"
	name = Column(String(256), nullable=False)
	instructor = Column(String(256), nullable=True)
	credits = Column(Integer, nullable=True)
	semester = Column(String(32), nullable=True)
	year = Column(Integer, nullable=True)
	description = Column(Text, nullable=True)
	prerequisites = Column(JSON, default=list, nullable=False)
	related_courses = Column(JSON, default=list, nullable=False)
	created_at = Column(DateTime, default=datetime.utcnow, nullable=False)


class Document(Base):
	__tablename__ = "documents"
	id = Column(Integer, primary_key=True, index=True)
	user_id = Column(Integer, ForeignKey("users.id", ondelete="CASCADE"), nullable=False, index=True)
	course_id = Column(Integer, ForeignKey("courses.id", ondelete="CASCADE"), nullable=False, index=True)
	title = Column(String(256), nullable=False)
	filename = Column(String(256), nullable=False)
	file_type = Column(String(128), nullable=False)
	file_path = Column(String(512), nullable=False)
	content = Column(Text, nullable=True)
	doc_metadata = Column("metadata", JSON, default=dict, nullable=False)
	tags = Column(JSON, default=list, nullable=False)
	upload_date = Column(DateTime, default=datetime.utcnow, nullable=False)


class QuizQuestion(Base):
	__tablename__ = "quiz_questions"
	id = Column(Integer, primary_key=True, index=True)
	course_id = Column(Integer, ForeignKey("courses.id", ondelete="CASCADE"), nullable=True, index=True)
	topic = Column(String(256), nullable=False)
	difficulty = Column(String(16), default="medium", nullable=False)
	question_type = Column(String(32), default="short-answer", nullable=False)
	question = Column(Text, nullable=False)
	options = Column(JSON, default=list, nullable=False)
	correct_answer = Column(Text, nullable=False)
	explanation = Column(Text, nullable=True)
	tags = Column(JSON, default=list, nullable=False)
	created_at = Column(DateTime, default=datetime.utcnow, nullable=False)


class QuizAttempt(Base):
	__tablename__ = "quiz_attempts"
	id = Column(Integer, primary_key=True, index=True)
	user_id = Column(Integer, ForeignKey("users.id", ondelete="CASCADE"), nullable=False, index=True)
	course_id = Column(Integer, ForeignKey("courses.id", ondelete="CASCADE"), nullable=True)
	topic = Column(String(256), nullable=False)
	question_id = Column(String(64), nullable=False)
	user_answer = Column(Text, nullable=True)
	is_correct = Column(Boolean, default=False, nullable=False)
	time_spent = Column(Integer, nullable=True)  # seconds
	attempted_at = Column(DateTime, default=datetime.utcnow, nullable=False)


class QuizSession(Base):
	__tablename__ = "quiz_sessions"
	id = Column(Integer, primary_key=True, index=True)
	user_id = Column(Integer, ForeignKey("users.id", ondelete="CASCADE"), nullable=False, index=True)
	course_id = Column(Integer, ForeignKey("courses.id", ondelete="CASCADE"), nullable=True)
	topics = Column(JSON, default=list, nullable=False)
	questions_count = Column(Integer, default=0, nullable=False)
	correct_count = Column(Integer, default=0, nullable=False)
	score = Column(Float, nullable=True)
	status = Column(String(16), default="in_progress", nullable=False)  # in_progress | completed | abandoned
	feedback = Column(Text, nullable=True)
	start_time = Column(DateTime, default=datetime.utcnow, nullable=False)
	end_time = Column(DateTime, nullable=True)


class StudyLevel(Base):
	__tablename__ = "study_levels"
	__table_args__ = (UniqueConstraint("user_id", "course_id", "topic", name="uq_study_level_user_course_topic"),)
	id = Column(Integer, primary_key=True, index=True)
	user_id = Column(Integer, ForeignKey("users.id", ondelete="CASCADE"), nullable=False, index=True)
	# Course code or "general" when the topic is not tied to a course
	course_id = Column(String(64), default="general", nullable=False)
	topic = Column(String(256), nullable=False)
	mastery_level = Column(Integer, default=0, nullable=False)  # 0-100
	questions_attempted = Column(Integer, default=0, nullable=False)
	questions_correct = Column(Integer, default=0, nullable=False)
	strengths = Column(JSON, default=list, nullable=False)
	weaknesses = Column(JSON, default=list, nullable=False)
	recommended_actions = Column(JSON, default=list, nullable=False)
	last_updated = Column(DateTime, default=datetime.utcnow, onupdate=datetime.utcnow, nullable=False)


class VoiceCommand(Base):
	__tablename__ = "voice_commands"
	id = Column(Integer, primary_key=True, index=True)
	user_id = Column(Integer, ForeignKey("users.id", ondelete="CASCADE"), nullable=False, index=True)
	course_id = Column(Integer, ForeignKey("courses.id", ondelete="SET NULL"), nullable=True)
	command = Column(Text, nullable=False)
	response = Column(Text, nullable=True)
	category = Column(String(32), nullable=True)
	emotion = Column(String(32), nullable=True)
	context = Column(Text, nullable=True)
	session_id = Column(String(64), nullable=True)
	processed = Column(Boolean, default=False, nullable=False)
	timestamp = Column(DateTime, default=datetime.utcnow, nullable=False, index=True)


class StudySession(Base):
	__tablename__ = "study_sessions"
	id = Column(Integer, primary_key=True, index=True)
	user_id = Column(Integer, ForeignKey("users.id", ondelete="CASCADE"), nullable=False, index=True)
	course_id = Column(Integer, ForeignKey("courses.id", ondelete="SET NULL"), nullable=True)
	topic = Column(String(256), nullable=True)
	duration_minutes = Column(Integer, default=0, nullable=False)
	focus_score = Column(Integer, nullable=True)  # 0-100
	completion_rate = Column(Integer, nullable=True)  # 0-100
	status = Column(String(16), default="active", nullable=False)  # active | completed
	start_time = Column(DateTime, default=datetime.utcnow, nullable=False)
	end_time = Column(DateTime, nullable=True)
