"""Built-in template catalogues for store items, badges and challenges."""

from __future__ import annotations

STORE_ITEM_TEMPLATES = [
    {"id": "homework_pass", "name": "Homework Pass", "category": "privileges", "cost": 50,
     "description": "Skip one homework assignment of your choice."},
    {"id": "choose_seat", "name": "Choose Your Seat", "category": "privileges", "cost": 25,
     "description": "Sit wherever you like for a day."},
    {"id": "line_leader", "name": "Line Leader", "category": "privileges", "cost": 15,
     "description": "Lead the class line for the day."},
    {"id": "extra_recess", "name": "Extra Recess", "category": "experiences", "cost": 40,
     "description": "Ten extra minutes of recess."},
    {"id": "lunch_with_teacher", "name": "Lunch with the Teacher", "category": "experiences", "cost": 75,
     "description": "Share lunch with your teacher and a friend."},
    {"id": "class_dj", "name": "Class DJ", "category": "experiences", "cost": 30,
     "description": "Pick the music during work time."},
    {"id": "pencil_pack", "name": "Pencil Pack", "category": "supplies", "cost": 10,
     "description": "A pack of fun pencils."},
    {"id": "sticker_sheet", "name": "Sticker Sheet", "category": "supplies", "cost": 5,
     "description": "A sheet of stickers."},
    {"id": "mystery_prize", "name": "Mystery Prize", "category": "rewards", "cost": 60,
     "description": "A surprise from the prize box."},
]

BADGE_TEMPLATES = [
    {"id": "perfect_attendance", "name": "Perfect Attendance",
     "description": "Awarded for excellent attendance",
     "icon": "fas fa-calendar-check", "color": "#10b981", "category": "attendance"},
    {"id": "top_performer", "name": "Top Performer",
     "description": "Recognize outstanding academic achievement",
     "icon": "fas fa-trophy", "color": "#f59e0b", "category": "academic"},
    {"id": "helper", "name": "Helper",
     "description": "Given to students who help others",
     "icon": "fas fa-heart", "color": "#ef4444", "category": "behavior"},
    {"id": "creative_thinker", "name": "Creative Thinker",
     "description": "For innovative and creative work",
     "icon": "fas fa-lightbulb", "color": "#8b5cf6", "category": "creativity"},
    {"id": "team_player", "name": "Team Player",
     "description": "Excellent collaboration skills",
     "icon": "fas fa-users", "color": "#06b6d4", "category": "collaboration"},
    {"id": "problem_solver", "name": "Problem Solver",
     "description": "Tackles challenges with determination",
     "icon": "fas fa-puzzle-piece", "color": "#84cc16", "category": "academic"},
]

CHALLENGE_TEMPLATES = [
    {"id": "reading_marathon", "name": "Reading Marathon",
     "description": "Read multiple books in a set timeframe",
     "icon": "fas fa-book", "color": "#10b981", "target_value": 10, "token_reward": 50,
     "category": "reading"},
    {"id": "homework_heroes", "name": "Homework Heroes",
     "description": "Complete assignments consistently",
     "icon": "fas fa-pencil-alt", "color": "#3b82f6", "target_value": 15, "token_reward": 30,
     "category": "academic"},
    {"id": "math_master", "name": "Math Master",
     "description": "Excel in mathematics assignments",
     "icon": "fas fa-calculator", "color": "#f59e0b", "target_value": 20, "token_reward": 40,
     "category": "math"},
    {"id": "science_explorer", "name": "Science Explorer",
     "description": "Conduct experiments and investigations",
     "icon": "fas fa-flask", "color": "#8b5cf6", "target_value": 8, "token_reward": 35,
     "category": "science"},
    {"id": "participation_champion", "name": "Participation Champion",
     "description": "Active participation in class discussions",
     "icon": "fas fa-hand-paper", "color": "#ef4444", "target_value": 25, "token_reward": 25,
     "category": "participation"},
    {"id": "token_saver", "name": "Token Saver",
     "description": "Save up a certain amount of tokens",
     "icon": "fas fa-piggy-bank", "color": "#06b6d4", "target_value": 100, "token_reward": 20,
     "category": "economy"},
]
