from .supabase_client import build_video_record, create_content_record, get_supabase

__all__ = ["build_video_record", "create_content_record", "get_supabase"]
