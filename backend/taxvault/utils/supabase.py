from supabase import create_client, Client
from taxvault.config import settings


def get_supabase_client() -> Client:
    """
    Create and return a Supabase client instance.
    Uses service role key so the receipt repository can write ledger data.
    """
    supabase: Client = create_client(
        settings.SUPABASE_URL,
        settings.SUPABASE_SERVICE_KEY
    )
    return supabase
