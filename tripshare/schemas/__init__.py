# Request, response and domain schemas
